import sys
import logging
import argparse
from siteshelf import create_app

log = logging.getLogger('werkzeug')
log.disabled = True
cli = sys.modules['flask.cli']
cli.show_server_banner = lambda *x: None


def main() -> None:
    p = argparse.ArgumentParser(prog="siteshelf")
    p.add_argument("--host", default="0.0.0.0")
    p.add_argument("--port", type=int, default=3001)
    p.add_argument("--debug", action="store_true")
    args = p.parse_args()

    app = create_app()
    print(f"SiteShelf API starting on http://{args.host}:{args.port}/api", flush=True)
    app.run(host=args.host, port=args.port, debug=args.debug)

if __name__ == "__main__":
    main()
