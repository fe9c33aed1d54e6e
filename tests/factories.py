"""
Test data factories for quote engine tests
Provides factories for creating realistic test data
"""

import random
import uuid
from datetime import date, timedelta
from decimal import Decimal
from typing import Any, Dict, List

from faker import Faker

from quotes import BusinessSnapshot, Customer, Quote, QuoteStatus, ServiceItem

# Initialize faker
fake = Faker('en_US')


class CustomerFactory:
    """Factory for customer snapshots"""

    @staticmethod
    def create_customer(**overrides) -> Dict[str, Any]:
        customer = {
            'name': fake.name(),
            'email': fake.email(),
            'phone': fake.numerify('05#-###-####'),
            'address': fake.address().replace('\n', ', ')[:500],
        }
        customer.update(overrides)
        return customer


class BusinessFactory:
    """Factory for business snapshots"""

    @staticmethod
    def create_business(**overrides) -> Dict[str, Any]:
        business = {
            'name': fake.company(),
            'email': fake.company_email(),
            'phone': fake.numerify('03-###-####'),
            'address': fake.address().replace('\n', ', ')[:500],
            'logo_url': None,
        }
        business.update(overrides)
        return business


class ItemFactory:
    """Factory for service items"""

    @staticmethod
    def create_item(description: str = None, quantity: Any = None, unit_price: Any = None) -> Dict[str, Any]:
        return {
            'description': description or fake.bs().capitalize(),
            'quantity': quantity if quantity is not None else random.randint(1, 10),
            'unit_price': unit_price if unit_price is not None else f"{random.randint(10, 2000)}.{random.randint(0, 99):02d}",
        }

    @staticmethod
    def create_items(count: int = 3) -> List[Dict[str, Any]]:
        return [ItemFactory.create_item() for _ in range(count)]


class QuoteFactory:
    """Factory for stored quotes (bypasses the aggregate)"""

    @staticmethod
    def create_quote(owner_id: str = "owner-1", quote_number: str = "2025-001",
                     status: QuoteStatus = QuoteStatus.DRAFT,
                     issue_date: date = date(2025, 3, 14), item_count: int = 2,
                     **overrides) -> Quote:
        data = {
            'id': str(uuid.uuid4()),
            'owner_id': owner_id,
            'quote_number': quote_number,
            'business_snapshot': BusinessSnapshot(**BusinessFactory.create_business()),
            'customer': Customer(**CustomerFactory.create_customer()),
            'items': [
                ServiceItem(id=str(uuid.uuid4()), **item)
                for item in ItemFactory.create_items(item_count)
            ],
            'notes': fake.sentence(),
            'issue_date': issue_date,
            'valid_until': issue_date + timedelta(days=30),
            'tax_rate': Decimal("17"),
            'status': status,
        }
        data.update(overrides)
        return Quote(**data)
