"""
Product Model — listed by a seller, bought by buyers.
cost is in cents and always a multiple of the smallest coin.
"""

import uuid
from vending.extensions import db


class Product(db.Model):
    __tablename__ = 'products'

    product_id = db.Column(db.Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    # Non-owning reference; deleting the seller leaves their products in place
    seller_id = db.Column(db.Uuid(as_uuid=True), nullable=False, index=True)
    product_name = db.Column(db.String(20), nullable=False)
    cost = db.Column(db.Integer, nullable=False)
    amount_available = db.Column(db.Integer, nullable=False, default=0)
    version = db.Column(db.Integer, nullable=False)
    created_at = db.Column(db.DateTime, server_default=db.func.now())
    updated_at = db.Column(db.DateTime, server_default=db.func.now(), onupdate=db.func.now())

    __table_args__ = (
        db.CheckConstraint('cost > 0 AND cost % 5 = 0', name='ck_products_cost'),
        db.CheckConstraint(
            'amount_available >= 0 AND amount_available <= 500',
            name='ck_products_amount_available',
        ),
    )
    __mapper_args__ = {'version_id_col': version}

    def to_dict(self):
        return {
            'product_id': str(self.product_id),
            'seller_id': str(self.seller_id),
            'product_name': self.product_name,
            'cost': self.cost,
            'amount_available': self.amount_available,
        }
