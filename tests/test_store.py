import pytest

from workshop.errors import NotFoundError
from workshop.models import Customer, ServiceCategory
from workshop.store import Repository, pagination_meta, parse_pagination


@pytest.mark.parametrize("page,limit,expected", [
    (None, None, (1, 20, 0)),
    (3, 10, (3, 10, 20)),
    (0, 500, (1, 100, 0)),
    (2, None, (2, 20, 20)),
])
def test_parse_pagination(page, limit, expected):
    assert parse_pagination(page, limit) == expected


def test_pagination_meta():
    assert pagination_meta(45, 2, 20) == {
        "page": 2, "limit": 20, "total": 45, "total_pages": 3, "has_next_page": True, "has_prev_page": True,
    }
    assert pagination_meta(0, 1, 20)["total_pages"] == 0


async def test_soft_delete_keeps_the_row(session, seed):
    customers = Repository(Customer, soft_delete=True, search_columns=("first_name", "last_name"))
    await customers.delete(session, seed.customer_id)
    customer = await customers.find(session, seed.customer_id)
    assert customer.is_active is False

    rows, meta = await customers.find_many(session, {"is_active": True})
    assert rows == []
    assert meta["total"] == 0


async def test_hard_delete_and_not_found(session):
    categories = Repository(ServiceCategory, label="Service Category")
    category = await categories.create(session, {"category_name": "Bodywork"})
    await categories.delete(session, category.id)
    with pytest.raises(NotFoundError) as excinfo:
        await categories.find(session, category.id)
    assert excinfo.value.message == f"Service Category with id {category.id} not found"


async def test_search_and_update(session, seed):
    customers = Repository(Customer, search_columns=("first_name", "last_name", "email"))
    await customers.create(session, {"first_name": "Grace", "last_name": "Hopper", "phone": "555-0199"})

    rows, _ = await customers.find_many(session, search="HOPP")
    assert [c.first_name for c in rows] == ["Grace"]
    rows, _ = await customers.find_many(session, search="example.com")
    assert [c.first_name for c in rows] == ["Ada"]

    updated = await customers.update(session, seed.customer_id, {"city": "London"})
    assert updated.city == "London"


async def test_update_keeps_not_null_columns_on_none(session, seed):
    customers = Repository(Customer)
    await customers.update(session, seed.customer_id, {"notes": "Prefers mornings"})
    updated = await customers.update(session, seed.customer_id, {"first_name": None, "phone": None, "notes": None})
    assert updated.first_name == "Ada"
    assert updated.phone == "555-0100"
    assert updated.notes is None
