import sys
import logging

from ntp_query.client import NtpClient
from ntp_query.configuration import (
    initialize_config,
    setup_logging,
    start_prometheus_server,
)
from ntp_query.packet import NtpError

logger = setup_logging("./config/logging.yaml")

CONFIG_FILE = "config/config.toml"


def query_once(host: str = None) -> int:
    configs = initialize_config(CONFIG_FILE)
    metrics_config = configs["Metrics"]
    if metrics_config.enable_prometheus_server:
        start_prometheus_server(metrics_config.prometheus_port)

    client = NtpClient(configs["NtpClient"])
    stats = client.query(host)
    print(f"offset={stats.offset:+.9f}s delay={stats.delay:.9f}s")
    return 0


if __name__ == "__main__":
    try:
        sys.exit(query_once(sys.argv[1] if len(sys.argv) > 1 else None))
    except (NtpError, OSError) as e:
        logger.error(f"Error: {e}")
        sys.exit(1)
    except KeyboardInterrupt:
        logger.info("Exiting")
        sys.exit(0)
