config_defaults = {
    "ntp": {
        "server": "pool.ntp.org",
        "port": 123,
        "timeout": 5.0,
        "metrics": {
            "enable_prometheus_server": False,
            "prometheus_port": 8000,
        },
    },
}
