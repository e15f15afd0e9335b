#!/usr/bin/env python3
"""
Script to seed a test college and print an admin token for it
"""
import asyncio
import sys
from datetime import timedelta

from bson import ObjectId
from dotenv import load_dotenv

from certchain.core.config import get_settings
from certchain.core.security import create_access_token
from certchain.db.mongo import connect_to_mongo, close_mongo_connection
from certchain.models.auth import Principal, Role

TEST_COLLEGE = {
    "name": "Test University",
    "code": "TEST01",
    "address": {
        "street": "123 Test Street",
        "city": "Test City",
        "state": "Test State",
        "country": "Test Country",
        "zip_code": "12345"
    },
    "contact": {
        "email": "admin@testuniversity.edu",
        "phone": "+1234567890",
        "website": "https://testuniversity.edu"
    },
    "blockchain": {
        "wallet_address": None,
        "is_authorized": False
    },
    "is_active": True
}


async def seed_college():
    """Create the TEST01 college if missing and issue a 24h admin token for it"""
    settings = get_settings()
    if settings.mongodb_url.startswith("memory://"):
        print("❌ MONGODB_URL points at the in-memory store, nothing to seed")
        return 1

    try:
        db = await connect_to_mongo(settings)
        print("✅ Connected to MongoDB")

        college = await db.colleges.find_one({"code": TEST_COLLEGE["code"]})
        if college:
            print(f"✅ Test college already exists: {college['name']}")
        else:
            result = await db.colleges.insert_one(dict(TEST_COLLEGE))
            college = await db.colleges.find_one({"_id": result.inserted_id})
            print(f"✅ Created test college: {college['name']}")

        print("\n📋 College Details:")
        print(f"   Code: {college['code']}")
        print(f"   Name: {college['name']}")
        print(f"   ID:   {college['_id']}")

        principal = Principal(user_id=str(ObjectId()), role=Role.ADMIN, college_id=str(college["_id"]))
        token = create_access_token(principal, settings, expires_delta=timedelta(hours=24))
        print("\n🔑 Admin bearer token (24h):")
        print(token)
        return 0

    except Exception as e:
        print(f"❌ Error: {e}")
        return 1
    finally:
        await close_mongo_connection()


if __name__ == "__main__":
    load_dotenv()
    sys.exit(asyncio.run(seed_college()))
