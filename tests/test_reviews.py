import re

import pytest

from apps.core.errors import Conflict, Forbidden, NotFound, ValidationFailed


@pytest.fixture
def reviews(services):
    return services.reviews


@pytest.fixture
def delivered_order(store):
    def create(order_id='ORD-20260301-0000000A', email='ana@example.com', products=('prod-shirt',),
               status='delivered', **extra):
        return store.insert('orders', {
            'orderId': order_id,
            'customer': {'name': 'Ana Berg', 'email': email},
            'items': [{'id': product, 'name': product, 'price': 100, 'quantity': 1} for product in products],
            'status': status,
            'isDeleted': False,
            **extra,
        })
    return create


def review_data(**overrides):
    data = {
        'productId': 'prod-shirt',
        'rating': 5,
        'title': 'Great fit',
        'comment': 'Fits perfectly after washing.',
        'customerName': 'Ana Berg',
        'customerEmail': 'Ana@Example.com',
        'reviewSource': 'post_purchase',
    }
    data.update(overrides)
    return data


def test_verified_review_is_created_pending(reviews, delivered_order):
    delivered_order()
    review = reviews.create_review(review_data())
    assert re.match(r'^RV\d{8}[0-9A-F]{4}$', review['id'])
    assert review['status'] == 'pending'
    assert review['verifiedPurchase'] is True
    assert review['orderId'] == 'ORD-20260301-0000000A'
    assert review['customerEmail'] == 'ana@example.com'


def test_general_feedback_skips_purchase_rules(reviews):
    review = reviews.create_review(review_data(productId='general', reviewSource='manual'))
    assert review['verifiedPurchase'] is False
    assert review['orderId'] is None
    # Sin límite: varias opiniones generales del mismo email
    reviews.create_review(review_data(productId='general', reviewSource='manual'))


def test_no_orders_means_not_verified(reviews):
    with pytest.raises(Forbidden) as excinfo:
        reviews.create_review(review_data())
    assert excinfo.value.code == 'PURCHASE_NOT_VERIFIED'


def test_quota_is_one_review_per_order(reviews, delivered_order):
    delivered_order(products=('prod-shirt', 'prod-comb'))
    reviews.create_review(review_data())

    with pytest.raises(Forbidden) as excinfo:
        reviews.create_review(review_data(productId='prod-comb'))
    assert excinfo.value.code == 'REVIEW_LIMIT_REACHED'
    assert excinfo.value.status == 403


def test_general_reviews_do_not_use_quota(reviews, delivered_order):
    delivered_order()
    reviews.create_review(review_data(productId='general', reviewSource='manual'))
    assert reviews.create_review(review_data())['verifiedPurchase'] is True


def test_duplicate_review_for_same_product(reviews, delivered_order):
    delivered_order()
    delivered_order(order_id='ORD-20260302-0000000B', status='completed')
    reviews.create_review(review_data())

    with pytest.raises(Conflict) as excinfo:
        reviews.create_review(review_data(rating=4))
    assert excinfo.value.code == 'DUPLICATE_REVIEW'


def test_product_must_be_in_an_order(reviews, delivered_order):
    delivered_order(products=('prod-comb',))
    with pytest.raises(Forbidden) as excinfo:
        reviews.create_review(review_data())
    assert excinfo.value.code == 'PURCHASE_NOT_VERIFIED'


@pytest.mark.parametrize('extra', [
    {'status': 'shipped'},
    {'isDeleted': True},
    {'email': 'someone@else.com'},
])
def test_orders_that_do_not_count(reviews, delivered_order, extra):
    delivered_order(**extra)
    with pytest.raises(Forbidden):
        reviews.create_review(review_data())


def test_verification_by_order_id(reviews, delivered_order):
    delivered_order()
    delivered_order(order_id='ORD-20260302-0000000B', products=('prod-comb',))
    with pytest.raises(Forbidden):
        reviews.create_review(review_data(orderId='ORD-20260302-0000000B'))
    review = reviews.create_review(review_data(orderId='ORD-20260301-0000000A'))
    assert review['orderId'] == 'ORD-20260301-0000000A'


@pytest.mark.parametrize('overrides, code', [
    ({'rating': 6}, 'INVALID_RATING'),
    ({'rating': 0}, 'INVALID_RATING'),
    ({'rating': True}, 'INVALID_RATING'),
    ({'rating': '5'}, 'INVALID_RATING'),
    ({'reviewSource': 'twitter'}, 'INVALID_REVIEW_SOURCE'),
    ({'comment': ''}, 'MISSING_FIELDS'),
    ({'customerEmail': 'nope'}, 'INVALID_EMAIL'),
])
def test_validation(reviews, overrides, code):
    with pytest.raises(ValidationFailed) as excinfo:
        reviews.create_review(review_data(productId='general', **overrides))
    assert excinfo.value.code == code


class TestModeration:

    def test_only_approved_reviews_are_listed(self, reviews, delivered_order):
        delivered_order()
        pending = reviews.create_review(review_data())
        assert reviews.list_reviews(product_id='prod-shirt')['reviews'] == []

        reviews.moderate(pending['id'], 'approved', note='ok')
        listing = reviews.list_reviews(product_id='prod-shirt')
        assert [review['id'] for review in listing['reviews']] == [pending['id']]
        assert listing['averageRating'] == 5
        assert listing['pagination']['total'] == 1

    def test_reject(self, reviews):
        review = reviews.create_review(review_data(productId='general', reviewSource='manual'))
        rejected = reviews.moderate(review['id'], 'rejected')
        assert rejected['status'] == 'rejected'
        assert rejected['moderatedAt']

    def test_invalid_moderation_status(self, reviews):
        review = reviews.create_review(review_data(productId='general', reviewSource='manual'))
        with pytest.raises(ValidationFailed):
            reviews.moderate(review['id'], 'pending')

    def test_soft_delete_frees_quota(self, reviews, delivered_order):
        delivered_order(products=('prod-shirt', 'prod-comb'))
        review = reviews.create_review(review_data())
        reviews.delete_review(review['id'])

        with pytest.raises(NotFound):
            reviews.get_review(review['id'])
        assert reviews.create_review(review_data(productId='prod-comb'))['verifiedPurchase'] is True
