"""Wiring of the marketplace managers over a local store and a messaging database."""
import logging

from pymongo.errors import PyMongoError

import settings
from background import BackgroundCheckSimulator
from identity import IdentityManager
from listings import ListingManager
from messaging import MessagingService
from payments import PaymentEngine
from seed import seed_demo_vehicles, seed_test_users
from store import LocalStore, VEHICLES
from temporary import AnonymousListingManager

logger = logging.getLogger(__name__)


class Services:
    def __init__(self, database, messaging_database=None, commission_rate: float = None):
        self.store = LocalStore(database)
        self.identity = IdentityManager(self.store)
        self.listings = ListingManager(self.store)
        self.temporary = AnonymousListingManager(self.store, self.listings)
        self.payments = PaymentEngine(self.store, self.listings, commission_rate)
        self.background = BackgroundCheckSimulator(self.listings)
        self.messaging = MessagingService(messaging_database, self.store)

    def startup(self, seed: bool = None):
        """Create indexes and collections, then seed demo data when asked."""
        self.store.ensure_indexes()
        if self.messaging.db is not None:
            try:
                self.messaging.init_messaging_collections()
            except PyMongoError as e:
                logger.warning("Messaging collections not initialized: %s", e)
        if settings.SEED_DEMO_DATA if seed is None else seed:
            seed_test_users(self.store)
            if not self.store.count(VEHICLES):
                seed_demo_vehicles(self.store)
        return self
