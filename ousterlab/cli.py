# ousterlab/cli.py
import argparse
import sys

from . import __version__
from .calibration import CalibrationError
from .config import ConfigError, load_yaml_config, merge_config
from .io import SinkError
from .pipeline import run
from .stream import CaptureFormatError
from .utils import log, setup


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="ousterlab",
                                description="Convert an Ouster legacy UDP capture into PCD frames")
    p.add_argument("-p", "--port", type=int, help="Destination port of the lidar UDP packets")
    p.add_argument("-m", "--meta", help="Lidar metadata (calibration) JSON file")
    p.add_argument("-i", "--input", help="Input pcap/pcapng file")
    p.add_argument("-o", "--output", help="Output directory")
    p.add_argument("-d", "--digit", dest="digits", type=int,
                   help="Digit number of output PCD filenames (default 4)")
    p.add_argument("--config", help="YAML file with any of the options above (flags win)")
    p.add_argument("--log-dir", dest="log_dir", help="Also write a rotating log file here")
    p.add_argument("--log-level", dest="log_level", choices=["DEBUG", "INFO", "WARNING", "ERROR"])
    p.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return p


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    cli_values = {
        "port": args.port, "meta": args.meta, "input": args.input, "output": args.output,
        "digits": args.digits, "log_dir": args.log_dir, "log_level": args.log_level,
    }

    try:
        file_values = load_yaml_config(args.config) if args.config else {}
        config = merge_config(file_values, cli_values)
    except ConfigError as e:
        print(f"[ERROR] {e}", file=sys.stderr)
        return 2

    setup(log_dir=config.log_dir, level=config.log_level, console=True)

    try:
        stats = run(config)
    except (CalibrationError, CaptureFormatError, SinkError, OSError) as e:
        log.error(f"{type(e).__name__}: {e}")
        return 2

    log.info("[SUMMARY] " + " ".join(f"{k}={v}" for k, v in stats.items()))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
