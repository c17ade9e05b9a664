"""
Reseñas con compra verificada.

Para un producto concreto se exige un pedido entregado/completado (no
eliminado) del mismo email que contenga el producto, como mucho una reseña
por producto y no más reseñas que pedidos. `productId == "general"` es
feedback general: no pasa por ninguna de esas reglas.
"""
import logging
import secrets
import time

from apps.core.clock import now_iso
from apps.core.errors import Conflict, Forbidden, NotFound, ValidationFailed

logger = logging.getLogger(__name__)

REVIEWS = 'reviews'
ORDERS = 'orders'
GENERAL_PRODUCT_ID = 'general'
VALID_SOURCES = ('product_page', 'email_request', 'post_purchase', 'manual', 'imported')
VERIFIED_ORDER_STATUSES = ['delivered', 'completed']
REQUIRED_FIELDS = ('productId', 'rating', 'comment', 'customerName', 'customerEmail', 'reviewSource')
MODERATION_STATUSES = ('approved', 'rejected')


def new_review_id():
    return f"RV{str(int(time.time() * 1000))[-8:]}{secrets.token_hex(2).upper()}"


def _contains_product(product_id):
    return {'$or': [{'items.id': product_id}, {'items.productId': product_id}]}


class ReviewService:

    def __init__(self, store):
        self.store = store

    # -- Verificación -------------------------------------------------------

    def _purchase_query(self, email, product_id):
        return {
            'customer.email': email,
            'status': {'$in': VERIFIED_ORDER_STATUSES},
            'isDeleted': {'$ne': True},
            '$and': [_contains_product(product_id)],
        }

    def verify_purchase_by_order(self, email, product_id, order_id):
        query = self._purchase_query(email, product_id)
        query['orderId'] = order_id
        return self.store.find_one(ORDERS, query)

    def verify_purchase(self, email, product_id):
        return self.store.find_one(ORDERS, self._purchase_query(email, product_id))

    def order_count(self, email) -> int:
        return self.store.count(ORDERS, {
            'customer.email': email,
            'status': {'$in': VERIFIED_ORDER_STATUSES},
            'isDeleted': {'$ne': True},
        })

    def review_count(self, email) -> int:
        return self.store.count(REVIEWS, {
            'customerEmail': email,
            'productId': {'$ne': GENERAL_PRODUCT_ID},
            'isDeleted': {'$ne': True},
        })

    # -- Alta ---------------------------------------------------------------

    def _validate(self, data):
        missing = [name for name in REQUIRED_FIELDS if data.get(name) in (None, '')]
        if missing:
            raise ValidationFailed('Missing required fields', fields=missing, code='MISSING_FIELDS')
        rating = data.get('rating')
        if isinstance(rating, bool) or not isinstance(rating, int) or not 1 <= rating <= 5:
            raise ValidationFailed('Rating must be between 1 and 5', fields=['rating'], code='INVALID_RATING')
        if data.get('reviewSource') not in VALID_SOURCES:
            raise ValidationFailed(
                f"Invalid reviewSource. Must be one of: {', '.join(VALID_SOURCES)}",
                fields=['reviewSource'],
                code='INVALID_REVIEW_SOURCE',
            )
        email = str(data['customerEmail']).strip().lower()
        if '@' not in email:
            raise ValidationFailed('Invalid email', fields=['customerEmail'], code='INVALID_EMAIL')
        return email

    def create_review(self, data) -> dict:
        email = self._validate(data)
        product_id = str(data['productId']).strip()
        order = None

        if product_id != GENERAL_PRODUCT_ID:
            orders = self.order_count(email)
            if not orders:
                raise Forbidden(
                    'Only customers with a delivered order can review products',
                    code='PURCHASE_NOT_VERIFIED',
                )
            if self.review_count(email) >= orders:
                raise Forbidden(
                    'You have already reviewed all of your orders',
                    code='REVIEW_LIMIT_REACHED',
                )

            if data.get('orderId'):
                order = self.verify_purchase_by_order(email, product_id, data['orderId'])
            else:
                order = self.verify_purchase(email, product_id)
            if order is None:
                raise Forbidden('Purchase of this product could not be verified', code='PURCHASE_NOT_VERIFIED')

            duplicate = self.store.find_one(REVIEWS, {
                'customerEmail': email,
                'productId': product_id,
                'isDeleted': {'$ne': True},
            })
            if duplicate:
                raise Conflict('You have already reviewed this product', code='DUPLICATE_REVIEW')

        timestamp = now_iso()
        review = {
            'id': new_review_id(),
            'productId': product_id,
            'rating': data['rating'],
            'title': (data.get('title') or '').strip(),
            'comment': str(data['comment']).strip(),
            'customerName': str(data['customerName']).strip(),
            'customerEmail': email,
            'reviewSource': data['reviewSource'],
            'verifiedPurchase': order is not None,
            'orderId': order['orderId'] if order else None,
            'status': 'pending',
            'isDeleted': False,
            'createdAt': timestamp,
            'updatedAt': timestamp,
        }
        created = self.store.insert(REVIEWS, review)
        logger.info("Reseña %s creada para %s por %s", review['id'], product_id, email)
        return created

    # -- Consulta y moderación ----------------------------------------------

    def get_review(self, review_id):
        review = self.store.find_one(REVIEWS, {'id': review_id, 'isDeleted': {'$ne': True}})
        if review is None:
            raise NotFound('Review not found', code='REVIEW_NOT_FOUND')
        return review

    def list_reviews(self, product_id=None, status='approved', source=None, rating=None,
                     page=1, limit=50) -> dict:
        query = {'isDeleted': {'$ne': True}}
        if product_id:
            query['productId'] = product_id
        if status:
            query['status'] = status
        if source:
            query['reviewSource'] = source
        if rating:
            query['rating'] = rating
        reviews = sorted(
            self.store.find(REVIEWS, query),
            key=lambda review: review.get('createdAt') or '',
            reverse=True,
        )
        page = max(1, page)
        limit = max(1, min(limit, 100))
        start = (page - 1) * limit
        ratings = [review['rating'] for review in reviews if isinstance(review.get('rating'), int)]
        return {
            'reviews': reviews[start:start + limit],
            'averageRating': round(sum(ratings) / len(ratings), 2) if ratings else 0,
            'pagination': {
                'page': page,
                'limit': limit,
                'total': len(reviews),
                'pages': (len(reviews) + limit - 1) // limit,
            },
        }

    def moderate(self, review_id, status, note=None) -> dict:
        if status not in MODERATION_STATUSES:
            raise ValidationFailed('Invalid moderation status', fields=['status'])
        self.get_review(review_id)
        timestamp = now_iso()
        changes = {'status': status, 'moderatedAt': timestamp, 'updatedAt': timestamp}
        if note:
            changes['moderationNote'] = note
        self.store.update(REVIEWS, {'id': review_id}, changes)
        logger.info("Reseña %s → %s", review_id, status)
        return self.get_review(review_id)

    def delete_review(self, review_id) -> None:
        self.get_review(review_id)
        timestamp = now_iso()
        self.store.update(
            REVIEWS, {'id': review_id}, {'isDeleted': True, 'deletedAt': timestamp, 'updatedAt': timestamp},
        )
