import argparse
import asyncio
import json
import sys
from pathlib import Path


def _project_root() -> Path:
    return Path(__file__).resolve().parents[1]


PROJECT_ROOT = _project_root()
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))


async def main() -> int:
    parser = argparse.ArgumentParser(description="Run one study generation for a stored preference.")
    parser.add_argument("--preference-id", required=True, help="custom_study_preferences.id")
    parser.add_argument("--user-id", required=True, help="Owner of the preference row")
    parser.add_argument(
        "--report",
        action="store_true",
        help="Print the per-unit run report instead of the response payload",
    )
    args = parser.parse_args()

    from dotenv import load_dotenv

    load_dotenv(PROJECT_ROOT / ".env")

    from app.infrastructure.container import StudyContainer
    from app.infrastructure.observability.logger_config import configure_structlog

    configure_structlog()
    container = StudyContainer()
    await container.startup()
    try:
        result = await container.orchestrator.run(args.preference_id, args.user_id)
    finally:
        await container.shutdown()

    payload = result.report() if args.report else result.to_response()
    print(json.dumps(payload, ensure_ascii=False, indent=2))
    return 0 if result.success else 1


if __name__ == "__main__":
    raise SystemExit(asyncio.run(main()))
