# avatar_studio/demo/seed_demo_data.py

from avatar_studio.core.ledger import LedgerStore
from avatar_studio.storage.db import DEFAULT_DB_PATH
from avatar_studio.storage.models import SubscriptionTier
from avatar_studio.storage.repository import ArtifactRepository, initialize_schema


def seed(db_path: str = DEFAULT_DB_PATH):
    initialize_schema(db_path)

    LedgerStore(db_path).open_account("demo_user", tier=SubscriptionTier.PREMIUM, initial_balance=10)

    return ArtifactRepository(db_path).create_avatar(
        "demo_user",
        "Nova",
        style="realistic",
        gender="female",
        hair_style="long",
        hair_color="red",
        eye_color="green",
        fashion_style="streetwear",
    )


if __name__ == "__main__":
    avatar = seed()
    print(f"Demo account seeded with avatar {avatar.id}")
