"""initial_schema

Revision ID: 3c1f0a7b
Revises:
Create Date: 2026-10-19 00:00:00.000000

"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "3c1f0a7b"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    # Raw SQL so IF NOT EXISTS is honoured for the enum type.
    op.execute("""
    DO $$
    BEGIN
        IF NOT EXISTS (SELECT 1 FROM pg_type WHERE typname = 'loanstatus') THEN
            CREATE TYPE loanstatus AS ENUM ('ACTIVE', 'RETURNED');
        END IF;
    END$$;
    """)

    # --- authors ---
    op.create_table(
        "authors",
        sa.Column("id", sa.Integer, autoincrement=True, nullable=False),
        sa.Column("first_name", sa.String(100), nullable=False),
        sa.Column("last_name", sa.String(100), nullable=False),
        sa.Column("biography", sa.Text, nullable=True),
        sa.Column("birth_year", sa.Integer, nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )

    # --- categories ---
    op.create_table(
        "categories",
        sa.Column("id", sa.Integer, autoincrement=True, nullable=False),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("description", sa.String(500), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("name"),
    )

    # --- books ---
    op.create_table(
        "books",
        sa.Column("id", sa.Uuid, nullable=False),
        sa.Column("title", sa.String(500), nullable=False),
        sa.Column("isbn", sa.String(20), nullable=False),
        sa.Column("published_year", sa.Integer, nullable=True),
        sa.Column("description", sa.Text, nullable=True),
        sa.Column("total_copies", sa.Integer, nullable=False),
        sa.Column("available_copies", sa.Integer, nullable=False),
        sa.Column("author_id", sa.Integer, nullable=False),
        sa.Column("category_id", sa.Integer, nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.CheckConstraint("total_copies >= 1", name="ck_books_total_copies_positive"),
        sa.CheckConstraint(
            "available_copies >= 0 AND available_copies <= total_copies",
            name="ck_books_available_copies_range",
        ),
        sa.ForeignKeyConstraint(["author_id"], ["authors.id"], ondelete="RESTRICT"),
        sa.ForeignKeyConstraint(["category_id"], ["categories.id"], ondelete="RESTRICT"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("isbn"),
    )
    op.create_index("ix_books_author_id", "books", ["author_id"])
    op.create_index("ix_books_category_id", "books", ["category_id"])

    # --- loans ---
    op.create_table(
        "loans",
        sa.Column("id", sa.Uuid, nullable=False),
        sa.Column("book_id", sa.Uuid, nullable=True),
        sa.Column("holder_id", sa.Uuid, nullable=False),
        sa.Column("loan_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("due_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("return_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "status",
            postgresql.ENUM("ACTIVE", "RETURNED", name="loanstatus", create_type=False),
            server_default="ACTIVE",
            nullable=False,
        ),
        sa.CheckConstraint("due_date >= loan_date", name="ck_loans_due_after_loan"),
        sa.CheckConstraint(
            "(status = 'RETURNED') = (return_date IS NOT NULL)",
            name="ck_loans_return_date_matches_status",
        ),
        sa.CheckConstraint(
            "status = 'RETURNED' OR book_id IS NOT NULL",
            name="ck_loans_active_has_book",
        ),
        sa.ForeignKeyConstraint(["book_id"], ["books.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_loans_holder_id", "loans", ["holder_id"])
    op.create_index("ix_loans_book_status", "loans", ["book_id", "status"])

    # Partial unique index: one active loan per (holder, book)
    op.execute("""
        CREATE UNIQUE INDEX IF NOT EXISTS uq_active_loan_per_holder_book
        ON loans (holder_id, book_id)
        WHERE status = 'ACTIVE'
    """)


def downgrade() -> None:
    op.execute("DROP INDEX IF EXISTS uq_active_loan_per_holder_book")
    op.drop_index("ix_loans_book_status", table_name="loans")
    op.drop_index("ix_loans_holder_id", table_name="loans")
    op.drop_table("loans")
    op.drop_index("ix_books_category_id", table_name="books")
    op.drop_index("ix_books_author_id", table_name="books")
    op.drop_table("books")
    op.drop_table("categories")
    op.drop_table("authors")

    op.execute("DROP TYPE IF EXISTS loanstatus")
