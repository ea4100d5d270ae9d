
import asyncio, argparse
from shimmer_exg_bridge.bridge import run
from shimmer_exg_bridge.errors import TransportError

def main():
    ap = argparse.ArgumentParser()
    ap.add_argument("--config", required=True)
    ap.add_argument("-i", "--interactive", action="store_true",
                    help="read commands (catalog name, configured name or hex) from stdin")
    args = ap.parse_args()
    try:
        asyncio.run(run(args.config, interactive=args.interactive))
    except TransportError as e:
        raise SystemExit(f"[err] {e}")
    except KeyboardInterrupt:
        pass

if __name__ == "__main__":
    main()
