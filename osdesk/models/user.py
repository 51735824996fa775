"""
OSDesk - Modelo User
Conta da loja. Todas as OS, situações e funcionários pertencem a uma conta.
"""
from sqlalchemy import Column, Integer, String, Boolean
from osdesk.database import Base
from osdesk.models.base import TimestampMixin


class User(Base, TimestampMixin):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    email = Column(String(255), unique=True, nullable=False, index=True)
    username = Column(String(100), nullable=False)
    hashed_password = Column(String(255), nullable=False)
    full_name = Column(String(200), nullable=True)
    phone = Column(String(20), nullable=True)

    # Dados da loja (cabeçalho de impressão e notificações)
    cnpj = Column(String(20), nullable=True)
    street = Column(String(200), nullable=True)
    number = Column(String(20), nullable=True)
    neighborhood = Column(String(100), nullable=True)
    city = Column(String(100), nullable=True)
    state = Column(String(50), nullable=True)

    is_active = Column(Boolean, default=True)

    def __repr__(self):
        return f"<User {self.email}>"
