"""
Account, Customer, Business and customer-business relationship models.

Accounts belong to the account system; loyalcard only reads them. Customer and
Business rows share their primary key with the account they describe, so an
identity is never duplicated.
"""
from datetime import datetime
from enum import Enum
from ..extensions import db


class AccountType(str, Enum):
    CUSTOMER = 'customer'
    BUSINESS = 'business'


class RelationshipStatus(str, Enum):
    ACTIVE = 'ACTIVE'
    DECLINED = 'DECLINED'


class Account(db.Model):
    """
    Login account owned by the account system.

    Read-only from the loyalty domain: provisioning copies name/email from here
    when it has to materialize a Customer row.
    """
    __tablename__ = 'accounts'

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    email = db.Column(db.String(255), nullable=False, unique=True)
    account_type = db.Column(db.String(20), nullable=False, default=AccountType.CUSTOMER.value)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    def __repr__(self):
        return f'<Account {self.id} {self.account_type}>'


class Customer(db.Model):
    """
    Loyalty-domain customer record.

    May be created lazily by provisioning the first time a loyalty row needs to
    reference it (the account existed, the customer record did not).
    """
    __tablename__ = 'customers'

    id = db.Column(db.Integer, db.ForeignKey('accounts.id'), primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    email = db.Column(db.String(255), nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    account = db.relationship('Account')

    def __repr__(self):
        return f'<Customer {self.id}>'

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'email': self.email,
            'created_at': self.created_at.isoformat() if self.created_at else None
        }


class Business(db.Model):
    """Program owner. Read-only from the loyalty core."""
    __tablename__ = 'businesses'

    id = db.Column(db.Integer, db.ForeignKey('accounts.id'), primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    email = db.Column(db.String(255))
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    programs = db.relationship('LoyaltyProgram', backref='business', lazy='dynamic')

    def __repr__(self):
        return f'<Business {self.id}: {self.name}>'


class CustomerBusinessRelationship(db.Model):
    """Whether a customer accepted (ACTIVE) or declined (DECLINED) a business."""
    __tablename__ = 'customer_business_relationships'

    id = db.Column(db.Integer, primary_key=True)
    customer_id = db.Column(db.Integer, db.ForeignKey('customers.id'), nullable=False)
    business_id = db.Column(db.Integer, db.ForeignKey('businesses.id'), nullable=False)
    status = db.Column(db.String(20), nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        db.UniqueConstraint('customer_id', 'business_id', name='uq_customer_business'),
    )

    def __repr__(self):
        return f'<CustomerBusinessRelationship {self.customer_id}->{self.business_id} {self.status}>'
