"""Entry point for the collection scheduling and route optimization engine."""
import argparse
import json
import sys

import pandas as pd
from loguru import logger

from configurations.config import Config
from core.engine import SchedulingEngine
from core.exceptions import SchedulingError
from models.collection_models import Bin, Location


def configure_logging(level: str = Config.LOG_LEVEL) -> None:
    logger.remove()
    logger.add(sys.stderr, level=level.upper())


def register_bins_from_csv(engine: SchedulingEngine, path: str) -> int:
    """Sync bins from a CSV export of the bin registry (bin_id, lon, lat, ...)."""
    df = pd.read_csv(path)
    missing = {'bin_id', 'lon', 'lat'} - set(df.columns)
    if missing:
        raise ValueError(f"Bins CSV is missing columns: {sorted(missing)}")

    df = df.astype(object).where(pd.notnull(df), None)
    count = 0
    for row in df.to_dict('records'):
        engine.blackboard.register_bin(Bin(
            bin_id=str(row['bin_id']),
            location=Location(lon=float(row['lon']), lat=float(row['lat'])),
            waste_type=row.get('waste_type') or "mixed",
            fill_level=float(row.get('fill_level') or 0.0),
            status=row.get('status') or "active",
            last_collected_at=pd.to_datetime(row['last_collected_at'], utc=True).to_pydatetime()
            if row.get('last_collected_at') else None,
            zone=str(row.get('zone') or "default"),
        ))
        count += 1
    logger.info(f"Registered {count} bins from {path}")
    return count


def main():
    """Command line interface for the scheduling engine."""
    parser = argparse.ArgumentParser(description="Collection Scheduling & Route Optimization Engine")
    parser.add_argument("--api", action="store_true", help="Start the FastAPI server")
    parser.add_argument("--host", default=Config.API_HOST, help="Host for the FastAPI server")
    parser.add_argument("--port", type=int, default=Config.API_PORT, help=f"Port for the FastAPI server (default: {Config.API_PORT})")
    parser.add_argument("--sweep-once", action="store_true", help="Run a single scheduling sweep and print the report")
    parser.add_argument("--bins", help="CSV of bins to register before sweeping")

    args = parser.parse_args()
    configure_logging()

    if args.api:
        import uvicorn
        from api.app import create_app
        logger.info(f"Starting FastAPI server on {args.host}:{args.port}")
        try:
            uvicorn.run(create_app(), host=args.host, port=args.port)
        except OSError as e:
            if "Address already in use" in str(e):
                logger.error(f"Port {args.port} is already in use. Try a different port with --port <number>")
            else:
                logger.error(f"Server startup failed: {e}")
            sys.exit(1)
        return

    if not args.sweep_once:
        parser.error("choose --api or --sweep-once")

    engine = SchedulingEngine.from_config()
    try:
        if args.bins:
            register_bins_from_csv(engine, args.bins)
        report = engine.agent.run_sweep()
        print(json.dumps(report.to_dict() if report else None, indent=2))
    except (SchedulingError, ValueError, OSError) as e:
        logger.error(f"Sweep failed: {e}")
        sys.exit(1)
    finally:
        engine.shutdown()


if __name__ == "__main__":
    main()
