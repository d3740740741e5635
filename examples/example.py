#!/usr/bin/env python

from pprint import pprint

from visual_traceroute import (
    TracerouteApp,
    geolocate_ip,
    is_private_ip,
    load_config,
    resolve_hostname,
    trace_target,
)

if __name__ == "__main__":
    # load configuration (default: ./visual_traceroute.toml, then ~/.config)
    config = load_config()

    # target host
    target = "example.com"

    # DNS over HTTPS
    print("Resolve...")
    ip = resolve_hostname(config, target)
    pprint(ip)

    # Geolocation chain (ip2location.io, ip-api.com, ipwhois.app)
    if not is_private_ip(ip):
        print("Geolocate...")
        result = geolocate_ip(config, ip)
        pprint(result.to_dict() if result else None)

    # One-off traceroute
    print("Traceroute...")
    result = trace_target(config, target)
    for hop in result.hops:
        city = hop.location.city if hop.location else "-"
        print(f"{hop.hop:>2} {hop.ip:<15} {hop.hostname:<24} {sum(hop.rtt) / 3:6.2f}ms {city}")

    # Scheduled traceroutes
    print("Schedules...")
    app = TracerouteApp(config)
    pprint(
        app.save_schedule(
            {
                "schedule": {
                    "id": "example",
                    "name": "Example.com every 15 minutes",
                    "target": target,
                    "intervalMinutes": 15,
                    "enabled": True,
                }
            }
        )
    )
    pprint(app.run_scheduled_traceroutes({"scheduleId": "example", "forceRun": True}))
    pprint(app.delete_schedule({"scheduleId": "example"}))
