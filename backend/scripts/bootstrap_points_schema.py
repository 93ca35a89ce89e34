import asyncio
import os
import sys
from pathlib import Path

BACKEND_ROOT = Path(__file__).resolve().parents[1]
if str(BACKEND_ROOT) not in sys.path:
    sys.path.append(str(BACKEND_ROOT))

from app.domain.gamification.achievements import DEFAULT_ACHIEVEMENTS
from app.domain.gamification.postgres_repo import PostgresGamificationRepository
from app.infra.postgres import close_pool, get_pool

MIGRATIONS_DIR = BACKEND_ROOT / "migrations"


async def main() -> None:
    files = sorted(name for name in os.listdir(MIGRATIONS_DIR) if name.endswith(".sql"))
    pool = await get_pool()
    try:
        async with pool.acquire() as conn:
            for filename in files:
                print(f"Executing {filename}...")
                sql = (MIGRATIONS_DIR / filename).read_text()
                async with conn.transaction():
                    await conn.execute(sql)
                print(f"Finished {filename}")

        await PostgresGamificationRepository().upsert_achievement_definitions(DEFAULT_ACHIEVEMENTS)
        print(f"Seeded {len(DEFAULT_ACHIEVEMENTS)} achievement definitions.")
    finally:
        await close_pool()


if __name__ == "__main__":
    if sys.platform == "win32":
        asyncio.set_event_loop_policy(asyncio.WindowsSelectorEventLoopPolicy())
    asyncio.run(main())
