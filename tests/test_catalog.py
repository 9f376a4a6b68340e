from bson import ObjectId


def product_names(response):
    return [product["name"] for product in response.get_json()["products"]]


def test_listing_shows_only_verified_products(client, add_product):
    add_product(name="Blue Vase")
    add_product(name="Draft Vase", is_verified=False)

    response = client.get("/api/products")

    assert response.status_code == 200
    assert product_names(response) == ["Blue Vase"]
    assert response.get_json()["total"] == 1


def test_listing_filters_by_search_category_and_price(client, add_product):
    add_product(name="Blue Vase", price=800.0, category="pottery")
    add_product(name="Silk Scarf", price=1500.0, category="textiles")
    add_product(name="Tiny blue bowl", price=300.0, category="pottery")

    by_name = client.get("/api/products?q=BLUE")
    by_category = client.get("/api/products?category=textiles")
    by_price = client.get("/api/products?max_price=500")
    everything = client.get("/api/products?category=all")

    assert sorted(product_names(by_name)) == ["Blue Vase", "Tiny blue bowl"]
    assert product_names(by_category) == ["Silk Scarf"]
    assert product_names(by_price) == ["Tiny blue bowl"]
    assert len(product_names(everything)) == 3


def test_price_ceiling_means_no_upper_bound(client, add_product):
    add_product(name="Carved Door", price=25000.0)

    assert product_names(client.get("/api/products?max_price=10000")) == ["Carved Door"]
    assert product_names(client.get("/api/products?max_price=9000")) == []


def test_listing_sorts_and_paginates(client, add_product):
    add_product(name="Oldest", price=300.0)
    add_product(name="Middle", price=100.0)
    add_product(name="Newest", price=200.0)

    newest = client.get("/api/products")
    cheapest = client.get("/api/products?sort=price-asc")
    priciest = client.get("/api/products?sort=price-desc")
    second_page = client.get("/api/products?per_page=2&page=2")

    assert product_names(newest) == ["Newest", "Middle", "Oldest"]
    assert product_names(cheapest) == ["Middle", "Newest", "Oldest"]
    assert product_names(priciest) == ["Oldest", "Newest", "Middle"]
    assert product_names(second_page) == ["Oldest"]
    assert second_page.get_json()["total_pages"] == 2


def test_page_size_bounds(client, add_product):
    for _ in range(3):
        add_product()

    single = client.get("/api/products?per_page=1").get_json()
    default = client.get("/api/products?per_page=0").get_json()
    capped = client.get("/api/products?per_page=500").get_json()
    garbage = client.get("/api/products?per_page=lots&page=-3").get_json()

    assert single["per_page"] == 1
    assert len(single["products"]) == 1
    assert single["total_pages"] == 3
    assert default["per_page"] == 12
    assert capped["per_page"] == 60
    assert garbage["per_page"] == 12
    assert garbage["page"] == 1


def test_infinite_paging_values_fall_back_to_defaults(client, add_product):
    add_product()

    response = client.get("/api/products?page=inf&per_page=inf")

    assert response.status_code == 200
    assert response.get_json()["page"] == 1
    assert response.get_json()["per_page"] == 12
    assert len(response.get_json()["products"]) == 1


def test_product_detail_serializes_media_urls(client, add_product):
    product_id = add_product(
        media=[
            {"filename": "products/a/clip.mp4", "type": "video"},
            {"filename": "products/a/photo.jpg", "type": "image"},
        ]
    )

    product = client.get(f"/api/products/{product_id}").get_json()["product"]

    assert [entry["type"] for entry in product["media"]] == ["video", "image"]
    assert product["image_url"].endswith("/uploads/products/a/photo.jpg")
    assert len(product["image_urls"]) == 1


def test_unverified_product_hidden_except_for_owner(client, add_product, verified_artisan):
    headers, artisan_id = verified_artisan()
    product_id = add_product(artisan_id=artisan_id, is_verified=False)

    anonymous = client.get(f"/api/products/{product_id}")
    owner = client.get(f"/api/products/{product_id}", headers=headers)

    assert anonymous.status_code == 404
    assert owner.status_code == 200


def test_product_detail_rejects_bad_and_unknown_ids(client):
    assert client.get("/api/products/not-an-id").status_code == 400
    assert client.get(f"/api/products/{ObjectId()}").status_code == 404


def test_track_view_increments_counter(client, add_product, database):
    product_id = add_product()

    client.post("/api/track-view", json={"productId": product_id})
    response = client.post("/api/track-view", json={"productId": product_id})

    assert response.get_json() == {"success": True}
    assert database.products.find_one({"_id": ObjectId(product_id)})["views"] == 2


def test_track_view_validation(client):
    assert client.post("/api/track-view", json={}).status_code == 400
    assert client.post("/api/track-view", json={"productId": str(ObjectId())}).status_code == 404


def test_categories(client):
    assert client.get("/api/categories").get_json()["categories"] == [
        "pottery",
        "textiles",
        "woodwork",
        "jewelry",
        "other",
    ]


def test_unknown_route_returns_json(client):
    response = client.get("/api/nothing-here")

    assert response.status_code == 404
    assert response.get_json()["message"] == "Resource not found."


def test_health(client):
    assert client.get("/health").get_json() == {"status": "ok"}
