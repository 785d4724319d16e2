#!/usr/bin/env python3
"""
Database Seeder for the Gym Retention API

Populates the database with a synthetic gym: staff accounts, members with
subscriptions, payments and check-in history spread across every risk
profile, then runs one retention evaluation pass.

Usage:
    # From project root with the package installed:
    python scripts/seed_database.py

    # Or via docker:
    docker-compose exec api python scripts/seed_database.py

    # With options:
    python scripts/seed_database.py --members 300 --staff 5 --clear

Member profiles (picked at random per member):
    - regular:   checked in during the last week, long subscription
    - lapsing:   last check-in 2-8 weeks ago
    - expiring:  subscription ends within the week
    - unpaid:    one to four PENDING payments
    - ghost:     never checked in
    - expired:   only an EXPIRED subscription, maybe a rejected payment
"""
import argparse
import asyncio
import random
from datetime import datetime, timedelta
from decimal import Decimal
from typing import List

from sqlalchemy import delete

from gym_retention.database import async_session_maker, init_db, close_db, utcnow
from gym_retention.models import database_models as models
from gym_retention.services.retention_service import RetentionService

# Configuration
DEFAULT_NUM_MEMBERS = 120
DEFAULT_NUM_STAFF = 3

# Data pools
FIRST_NAMES = [
    "James", "Mary", "John", "Patricia", "Robert", "Jennifer", "Michael", "Linda",
    "William", "Elizabeth", "David", "Barbara", "Richard", "Susan", "Joseph", "Jessica",
    "Emma", "Olivia", "Ava", "Isabella", "Sophia", "Mia", "Charlotte", "Amelia",
    "Liam", "Noah", "Oliver", "Elijah", "Lucas", "Mason", "Logan", "Alexander",
    "Mohamed", "Chen", "Wei", "Raj", "Priya", "Yuki", "Sakura", "Jin", "Fatima", "Ali"
]

LAST_NAMES = [
    "Smith", "Johnson", "Williams", "Brown", "Jones", "Garcia", "Miller", "Davis",
    "Rodriguez", "Martinez", "Hernandez", "Lopez", "Gonzalez", "Wilson", "Anderson",
    "Lee", "Kim", "Wong", "Liu", "Chen", "Patel", "Kumar", "Singh", "Tanaka", "Ahmed"
]

PLANS = [
    {"name": "Monthly", "duration_months": 1, "price": Decimal("49.00")},
    {"name": "Quarterly", "duration_months": 3, "price": Decimal("129.00")},
    {"name": "Annual", "duration_months": 12, "price": Decimal("449.00")},
]

PROFILES = ["regular", "regular", "regular", "lapsing", "expiring", "unpaid", "ghost", "expired"]

# Tables in delete order (children first)
CLEAR_ORDER = [
    models.Notification,
    models.RetentionTaskHistory,
    models.RetentionTask,
    models.MemberRetentionRisk,
    models.Payment,
    models.AttendanceRecord,
    models.Subscription,
    models.Member,
    models.MembershipPlan,
    models.User,
]


def random_date(start: datetime, end: datetime) -> datetime:
    """Generate random datetime between start and end"""
    delta = end - start
    random_seconds = random.randint(0, max(1, int(delta.total_seconds())))
    return start + timedelta(seconds=random_seconds)


def random_email(first: str, last: str, n: int) -> str:
    return f"{first.lower()}.{last.lower()}.{n}@gym.example"


def add_check_ins(db, member: models.Member, last: datetime, count: int) -> None:
    for i in range(count):
        check_in = last - timedelta(days=i * random.randint(2, 5), hours=random.randint(0, 3))
        db.add(models.AttendanceRecord(
            member_id=member.id,
            check_in_time=check_in,
            check_out_time=check_in + timedelta(minutes=random.randint(45, 120)),
        ))


async def seed_database(
    num_members: int = DEFAULT_NUM_MEMBERS,
    num_staff: int = DEFAULT_NUM_STAFF,
    clear_existing: bool = False
):
    """
    Seed the database with synthetic data.

    Args:
        num_members: Number of gym members to create
        num_staff: Number of STAFF accounts (plus one OWNER and one ADMIN)
        clear_existing: Whether to clear existing data first
    """
    print("=" * 60)
    print("Gym Retention Database Seeder")
    print("=" * 60)
    print(f"Members: {num_members}")
    print(f"Staff: {num_staff}")
    print()

    await init_db()
    now = utcnow()

    async with async_session_maker() as db:
        try:
            if clear_existing:
                print("Clearing existing data...")
                for model in CLEAR_ORDER:
                    await db.execute(delete(model))
                await db.commit()
                print("  Done clearing tables")

            # =================================================================
            # 1. Staff accounts
            # =================================================================
            print("\n1. Seeding staff accounts...")
            staff_roles = ["OWNER", "ADMIN"] + ["STAFF"] * num_staff + ["TRAINER"]
            for i, role in enumerate(staff_roles):
                first, last = random.choice(FIRST_NAMES), random.choice(LAST_NAMES)
                db.add(models.User(
                    email=f"{role.lower()}{i}@gym.example",
                    first_name=first,
                    last_name=last,
                    role=role,
                    created_at=now - timedelta(days=400 - i),
                ))
            await db.flush()
            print(f"  Created {len(staff_roles)} staff accounts")

            # =================================================================
            # 2. Membership plans
            # =================================================================
            print("\n2. Seeding membership plans...")
            plans: List[models.MembershipPlan] = []
            for plan_data in PLANS:
                plan = models.MembershipPlan(**plan_data)
                db.add(plan)
                plans.append(plan)
            await db.flush()
            print(f"  Created {len(plans)} plans")

            # =================================================================
            # 3. Members with activity
            # =================================================================
            print(f"\n3. Seeding {num_members} members...")
            profile_counts = {}
            for i in range(num_members):
                first, last = random.choice(FIRST_NAMES), random.choice(LAST_NAMES)
                user = models.User(
                    email=random_email(first, last, i),
                    first_name=first,
                    last_name=last,
                    role="MEMBER",
                    status="ACTIVE" if random.random() < 0.95 else "INACTIVE",
                )
                db.add(user)
                await db.flush()

                joined = random_date(now - timedelta(days=720), now - timedelta(days=40))
                member = models.Member(user_id=user.id, joined_at=joined, created_at=joined)
                db.add(member)
                await db.flush()

                profile = random.choice(PROFILES)
                profile_counts[profile] = profile_counts.get(profile, 0) + 1
                plan = random.choice(plans)

                if profile == "expired":
                    end = now - timedelta(days=random.randint(1, 60))
                    status = "EXPIRED"
                elif profile == "expiring":
                    end = now + timedelta(days=random.randint(0, 7), hours=random.randint(1, 20))
                    status = "ACTIVE"
                else:
                    end = now + timedelta(days=random.randint(20, 300))
                    status = "ACTIVE"
                subscription = models.Subscription(
                    member_id=member.id,
                    membership_plan_id=plan.id,
                    status=status,
                    start_date=end - timedelta(days=30 * plan.duration_months),
                    end_date=end,
                )
                db.add(subscription)
                await db.flush()

                if profile == "regular":
                    add_check_ins(db, member, now - timedelta(days=random.randint(0, 6)), random.randint(3, 15))
                elif profile == "lapsing":
                    add_check_ins(db, member, now - timedelta(days=random.randint(14, 56)), random.randint(1, 8))
                elif profile in ("expiring", "unpaid", "expired"):
                    add_check_ins(db, member, now - timedelta(days=random.randint(0, 40)), random.randint(1, 6))

                db.add(models.Payment(
                    member_id=member.id,
                    subscription_id=subscription.id,
                    amount=plan.price,
                    status="PAID",
                    created_at=subscription.start_date,
                ))
                if profile == "unpaid":
                    for _ in range(random.randint(1, 4)):
                        db.add(models.Payment(
                            member_id=member.id,
                            subscription_id=subscription.id,
                            amount=plan.price,
                            status="PENDING",
                            created_at=random_date(now - timedelta(days=60), now),
                        ))
                if profile == "expired" and random.random() < 0.5:
                    db.add(models.Payment(
                        member_id=member.id,
                        amount=plan.price,
                        status="REJECTED",
                        created_at=random_date(now - timedelta(days=25), now),
                    ))

                if (i + 1) % 50 == 0:
                    await db.flush()
                    print(f"    Created {i + 1}/{num_members} members...")

            await db.commit()
            print(f"  Created {num_members} members: " + ", ".join(
                f"{name}={count}" for name, count in sorted(profile_counts.items())
            ))

            # =================================================================
            # 4. Retention evaluation
            # =================================================================
            print("\n4. Running retention evaluation...")
            result = await RetentionService.recalculate_all(db, now=now)
            await db.commit()

            # =================================================================
            # Done!
            # =================================================================
            print("\n" + "=" * 60)
            print("✅ Database seeding complete!")
            print("=" * 60)
            print(f"""
Summary:
  - {len(staff_roles)} staff accounts
  - {len(plans)} membership plans
  - {num_members} members
  - {result.processed} risk snapshots (HIGH={result.high}, MEDIUM={result.medium}, LOW={result.low})
  - {result.skipped} members skipped
            """)

        except Exception as e:
            await db.rollback()
            print(f"\n❌ Error during seeding: {e}")
            raise

    await close_db()


def main():
    parser = argparse.ArgumentParser(
        description="Seed the Gym Retention database with synthetic data"
    )
    parser.add_argument(
        "--members", "-m",
        type=int,
        default=DEFAULT_NUM_MEMBERS,
        help=f"Number of members (default: {DEFAULT_NUM_MEMBERS})"
    )
    parser.add_argument(
        "--staff", "-s",
        type=int,
        default=DEFAULT_NUM_STAFF,
        help=f"Number of STAFF accounts (default: {DEFAULT_NUM_STAFF})"
    )
    parser.add_argument(
        "--seed",
        type=int,
        default=None,
        help="Random seed for reproducible data"
    )
    parser.add_argument(
        "--clear", "-c",
        action="store_true",
        help="Clear existing data before seeding"
    )

    args = parser.parse_args()
    if args.seed is not None:
        random.seed(args.seed)

    asyncio.run(seed_database(
        num_members=args.members,
        num_staff=args.staff,
        clear_existing=args.clear
    ))


if __name__ == "__main__":
    main()
