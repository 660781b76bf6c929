"""Tests for product listing, filtering and categories."""

import pytest

import catalog
from conftest import auth_header
from errors import RequestValidationFailed


class TestProductFilter:
    def test_active_only_by_default(self):
        assert catalog.build_product_filter() == {"is_active": True}

    def test_price_range(self):
        q = catalog.build_product_filter(min_price=100, max_price=500)
        assert q["price"] == {"$gte": 100, "$lte": 500}

    def test_inverted_price_range(self):
        with pytest.raises(RequestValidationFailed):
            catalog.build_product_filter(min_price=500, max_price=100)

    def test_dietary_flags(self):
        q = catalog.build_product_filter(dietary=["vegan", "eggless"])
        assert q["dietary.vegan"] is True
        assert q["dietary.eggless"] is True

    def test_unknown_dietary_flag(self):
        with pytest.raises(RequestValidationFailed) as exc:
            catalog.build_product_filter(dietary=["keto"])
        assert exc.value.errors[0]["field"] == "dietary"

    def test_search_is_escaped(self):
        q = catalog.build_product_filter(search="1.5kg (large)")
        assert q["$or"][0]["name"]["$regex"] == r"1\.5kg\ \(large\)"

    def test_split_csv(self):
        assert catalog.split_csv(" 500g, 1kg ,,") == ["500g", "1kg"]
        assert catalog.split_csv(None) == []


class TestPagination:
    def test_middle_page(self):
        assert catalog.build_pagination(2, 10, 35) == {
            "current_page": 2,
            "total_pages": 4,
            "total": 35,
            "has_next_page": True,
            "has_prev_page": True,
        }

    def test_empty(self):
        pagination = catalog.build_pagination(1, 20, 0)
        assert pagination["total_pages"] == 0
        assert not pagination["has_next_page"]


class TestProductView:
    def test_discount_and_status(self):
        view = catalog.product_view({
            "price": 899,
            "original_price": 1099,
            "is_active": True,
            "availability": {"in_stock": True, "quantity": 3},
        })
        assert view["discount_percentage"] == 18
        assert view["availability_status"] == "in-stock"

    @pytest.mark.parametrize("availability, is_active, expected", [
        ({"in_stock": False, "quantity": 0}, True, "out-of-stock"),
        ({"in_stock": True, "quantity": 0, "pre_order_days": 2}, True, "pre-order"),
        ({"in_stock": True, "quantity": 5}, False, "inactive"),
    ])
    def test_availability_status(self, availability, is_active, expected):
        assert catalog.availability_status({"availability": availability, "is_active": is_active}) == expected


class TestProductRoutes:
    def test_list_filters_and_sorts(self, client, make_product):
        make_product(name="Lemon Cake", price=300)
        make_product(name="Mango Cake", price=700)
        make_product(name="Tulips", category="flowers", price=400, weight="500g")
        make_product(name="Hidden Cake", price=350, is_active=False)

        response = client.get("/api/products", params={"category": "cakes", "sort": "price-high"})

        data = response.json()["data"]
        assert [p["name"] for p in data["products"]] == ["Mango Cake", "Lemon Cake"]
        assert data["pagination"]["total"] == 2
        assert data["filters"]["sort"] == "price-high"

    def test_search(self, client, make_product):
        make_product(name="Black Forest Cake", description="Cherries and cream")
        make_product(name="Plain Sponge")

        response = client.get("/api/products", params={"search": "cherries"})

        assert [p["name"] for p in response.json()["data"]["products"]] == ["Black Forest Cake"]

    def test_unknown_sort_rejected(self, client):
        response = client.get("/api/products", params={"sort": "cheapest"})

        assert response.status_code == 400

    def test_limit_capped(self, client):
        response = client.get("/api/products", params={"limit": 500})

        assert response.status_code == 400

    def test_get_by_id(self, client, make_product):
        pid = make_product(name="Rose Cake")
        make_product(name="Tulip Cake")

        response = client.get(f"/api/products/{pid}")

        data = response.json()["data"]
        assert data["product"]["name"] == "Rose Cake"
        assert data["product"]["seo"]["slug"] == "rose-cake"
        assert [p["name"] for p in data["related_products"]] == ["Tulip Cake"]

    def test_inactive_product_not_available(self, client, make_product):
        pid = make_product(is_active=False)

        response = client.get(f"/api/products/{pid}")

        assert response.status_code == 404
        assert response.json()["message"] == "Product is not available"

    def test_bad_product_id(self, client):
        response = client.get("/api/products/xyz")

        assert response.status_code == 400
        assert response.json()["errors"] == [{"field": "product_id", "message": "Invalid product id"}]

    def test_by_slug(self, client, make_product):
        make_product(name="Blueberry Cheesecake")

        response = client.get("/api/products/slug/blueberry-cheesecake")

        assert response.json()["data"]["product"]["name"] == "Blueberry Cheesecake"

    def test_featured(self, client, make_product):
        make_product(name="Star Cake", is_featured=True)
        make_product(name="Plain Cake")

        response = client.get("/api/products/featured")

        assert [p["name"] for p in response.json()["data"]["products"]] == ["Star Cake"]


class TestCategories:
    def test_seed_requires_admin(self, client):
        assert client.post("/api/seed", headers=auth_header()).status_code == 403

    def test_seed_and_list(self, client):
        seeded = client.post("/api/seed", headers=auth_header("admin-token"))
        assert seeded.json()["data"]["status"] == "seeded"

        again = client.post("/api/seed", headers=auth_header("admin-token"))
        assert again.json()["data"]["status"] == "exists"

        response = client.get("/api/categories")

        data = response.json()["data"]
        assert data["total"] == 4
        cakes = data["categories"][0]
        assert cakes["id"] == "cakes"
        assert cakes["product_count"] == 3
        assert cakes["price_range"]["min"] == 749
        assert cakes["price_range"]["max"] == 1199

    def test_filters(self, client, make_product):
        make_product(name="Vegan Cake", weight="500g", dietary={"vegan": True}, occasions=["birthday"])
        make_product(name="Big Cake", weight="2kg", price=1500)

        response = client.get("/api/categories/filters")

        filters = response.json()["data"]["filters"]
        assert filters["weights"] == ["2kg", "500g"]
        assert filters["occasions"] == ["birthday"]
        assert filters["price_range"] == {"min_price": 500, "max_price": 1500}
        assert filters["dietary"] == [
            {"key": "vegetarian", "name": "Vegetarian", "count": 2},
            {"key": "vegan", "name": "Vegan", "count": 1},
        ]
