import asyncio
import sys
from pathlib import Path

# Add project root to python path to allow imports
project_root = Path(__file__).parent.parent
sys.path.append(str(project_root))

from lexindex.db.db_manager import db_manager
from lexindex.exceptions import DatabaseConnectionError
from sqlalchemy.exc import SQLAlchemyError


async def main() -> int:
    print("Initializing Database...")
    try:
        await db_manager.check_connection()
        await db_manager.init_db()
        print("✅ Tables created successfully!")
        return 0
    except (DatabaseConnectionError, SQLAlchemyError) as e:
        print(f"❌ Failed: {e}")
        return 1
    finally:
        await db_manager.dispose()

if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
