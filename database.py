"""
MongoDB connections.

`db` backs the local marketplace store (users, vehicles, temporary vehicles,
transactions). `messaging_db` backs conversations and messages and may live
on a different server. Both are None when no URL is configured.
"""
import logging

from pymongo import MongoClient

import settings

logger = logging.getLogger(__name__)


def connect(url, name):
    if not url:
        return None
    client = MongoClient(url, serverSelectionTimeoutMS=5000, tz_aware=False)
    logger.info("MongoDB client created for database %s", name)
    return client[name]


db = connect(settings.DATABASE_URL, settings.DATABASE_NAME)

if settings.MESSAGING_DATABASE_URL == settings.DATABASE_URL and settings.MESSAGING_DATABASE_NAME == settings.DATABASE_NAME:
    messaging_db = db
else:
    messaging_db = connect(settings.MESSAGING_DATABASE_URL, settings.MESSAGING_DATABASE_NAME)
