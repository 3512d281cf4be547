# Queries a Source engine server and prints what it reports

import argparse
import logging
import os

from sourcequery.options import Config, QueryOptions
from sourcequery.packet import QueryError
from sourcequery.query import get_managed_query


def main():
    parser = argparse.ArgumentParser(description="Query a Source engine game server")
    parser.add_argument("address", nargs="?", help="host:port of the query port (default: 'address' from the config)")
    parser.add_argument("--config", default="config.txt", help="key=value file with query options")
    parser.add_argument("-v", "--verbose", action="store_true", help="log every packet")
    args = parser.parse_args()

    # Setup logger
    logging.basicConfig(format='[%(asctime)s][%(levelname)s] %(message)s', datefmt='%m/%d %H:%M:%S',
                        level=logging.DEBUG if args.verbose else logging.INFO)

    config = Config(args.config) if os.path.exists(args.config) else None
    options = QueryOptions.from_config(config) if config else QueryOptions()
    address = args.address or (config.get("address", "").strip() if config else "")
    if not address:
        parser.error("no address given and none found in %s" % args.config)

    logging.info('Querying %s with %s', address, options)
    try:
        with get_managed_query(address, options) as query:
            print("Ping:", query.ping())
            print(query.info())
            for player in query.players():
                print(player)
            for key, value in sorted(query.rules().items()):
                print(key, "=", value)
    except QueryError as e:
        logging.error('Query failed: %s: %s', e.__class__.__name__, e)
        return 1
    return 0


if __name__ == '__main__':
    raise SystemExit(main())
