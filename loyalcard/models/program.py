"""
Loyalty program model.
"""
from datetime import datetime
from ..extensions import db


class LoyaltyProgram(db.Model):
    """
    A named point-earning scheme owned by exactly one business.
    Never modified by the enrollment or award transactions.
    """
    __tablename__ = 'loyalty_programs'

    id = db.Column(db.Integer, primary_key=True)
    business_id = db.Column(db.Integer, db.ForeignKey('businesses.id'), nullable=False)

    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text)
    is_active = db.Column(db.Boolean, default=True, nullable=False)

    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def __repr__(self):
        return f'<LoyaltyProgram {self.id}: {self.name}>'

    def to_dict(self):
        return {
            'id': self.id,
            'business_id': self.business_id,
            'name': self.name,
            'description': self.description,
            'is_active': self.is_active
        }
