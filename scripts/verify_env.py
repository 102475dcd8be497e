# Copyright (c) 2026 Flowsmith Contributors. All Rights Reserved.

"""Check dependencies, configuration and backing services before starting Flowsmith."""

import asyncio
import importlib.util
import os
import sys

# Add project root to sys.path
sys.path.append(os.getcwd())


def check_import(package_name):
    print(f"[Check] Import: {package_name} ... ", end="")
    if importlib.util.find_spec(package_name):
        print("OK")
        return True
    print("FAILED (pip install required)")
    return False


async def check_db(url):
    from sqlalchemy import text
    from sqlalchemy.exc import SQLAlchemyError
    from sqlalchemy.ext.asyncio import create_async_engine

    print(f"[Check] Database: {url.split('@')[-1]} ... ", end="")
    engine = create_async_engine(url)
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        print("OK")
        return True
    except (SQLAlchemyError, OSError) as e:
        print(f"FAILED\n  Error: {e}")
        return False
    finally:
        await engine.dispose()


async def check_redis(url):
    from flowsmith.kernel.redis_client import close_redis, connect_redis

    print(f"[Check] Redis: {url} ... ", end="")
    client = await connect_redis(url)
    if client is None:
        print("UNAVAILABLE (API will run in degraded inline mode)")
        return False
    await close_redis(client)
    print("OK")
    return True


def check_api_key(key):
    print("[Check] DashScope API Key ... ", end="")
    if not key:
        print("MISSING (workflow generation will use templates only)")
        return False
    if key.startswith("sk-"):
        print("OK (Format looks valid)")
        return True
    print("WARNING (Invalid format?)")
    return True


def check_builder(base_url):
    print("[Check] Builder API ... ", end="")
    if not base_url:
        print("NOT SET (deployments use the simulated builder)")
        return False
    print(f"OK ({base_url})")
    return True


async def main():
    print("=== Flowsmith Environment Verification ===\n")

    # 1. Check Dependencies
    pkgs = ["fastapi", "uvicorn", "pydantic_settings", "sqlalchemy", "asyncpg", "redis",
            "httpx", "dashscope"]
    if not all(check_import(p) for p in pkgs):
        print("\n[FATAL] Missing dependencies. Run: pip install -e .")
        return

    # 2. Load Settings
    from pydantic import ValidationError

    try:
        from flowsmith.core.config import FlowsmithSettings
        settings = FlowsmithSettings()
        print(f"[Info] Loaded Config: DB={settings.DATABASE_URL.split('@')[-1]}, "
              f"Redis={settings.REDIS_URL}")
    except ValidationError as e:
        print(f"\n[FATAL] Configuration load failed: {e}")
        print("  -> Check your .env file format")
        return

    # 3. Infrastructure Checks
    db_ok = await check_db(settings.DATABASE_URL)
    redis_ok = await check_redis(settings.REDIS_URL)
    key_ok = check_api_key(settings.DASHSCOPE_API_KEY)
    builder_ok = check_builder(settings.BUILDER_BASE_URL)

    print("\n=== Summary ===")
    if db_ok and redis_ok and key_ok and builder_ok:
        print("[OK] Environment Ready. You can now start the service:")
        print("     uvicorn flowsmith.main:app --host 0.0.0.0 --port 8000 --reload")
        print("     flowsmith-worker")
    else:
        print("[WARN] Environment Issues Found")
        if not db_ok:
            print("   - Ensure PostgreSQL is running and DATABASE_URL is correct")
        if not redis_ok:
            print("   - Start Redis for durable queues and deploy deduplication")
        if not key_ok:
            print("   - Set DASHSCOPE_API_KEY in .env for model-backed generation")
        if not builder_ok:
            print("   - Set BUILDER_BASE_URL to deploy to the real builder")


if __name__ == "__main__":
    if sys.platform == "win32":
        asyncio.set_event_loop_policy(asyncio.WindowsSelectorEventLoopPolicy())
    asyncio.run(main())
