import uuid
import bcrypt
from vending.extensions import db

ROLES = ('buyer', 'seller')


class User(db.Model):
    __tablename__ = 'users'

    user_id = db.Column(db.Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    username = db.Column(db.String(20), unique=True, nullable=False)
    password_hash = db.Column(db.Text, nullable=False)
    role = db.Column(db.Enum(*ROLES, name='user_role'), nullable=False)
    # Cents. Only deposit, settlement and reset touch this column
    deposit = db.Column(db.Integer, nullable=False, default=0)
    version = db.Column(db.Integer, nullable=False)
    created_at = db.Column(db.DateTime, server_default=db.func.now())
    updated_at = db.Column(db.DateTime, server_default=db.func.now(), onupdate=db.func.now())

    __table_args__ = (
        db.CheckConstraint('deposit >= 0', name='ck_users_deposit_non_negative'),
    )
    __mapper_args__ = {'version_id_col': version}

    def set_password(self, password):
        self.password_hash = bcrypt.hashpw(password.encode('utf-8'), bcrypt.gensalt()).decode('utf-8')

    def check_password(self, password):
        return bcrypt.checkpw(password.encode('utf-8'), self.password_hash.encode('utf-8'))

    def to_dict(self):
        return {
            'user_id': str(self.user_id),
            'username': self.username,
            'role': self.role,
            'deposit': self.deposit or 0,
        }
