"""
Seed script: populates the database with a small catalogue for development.

Run with:
    python -m lending.db.seed
"""

import asyncio
import logging

from sqlalchemy import func, select

from lending.core.logging import setup_logging
from lending.db.session import AsyncSessionLocal, init_models
from lending.models.book import Book
from lending.models.catalog import Author, Category

logger = logging.getLogger(__name__)

SEED_CATEGORIES = [
    {"name": "Fiction", "description": "Novels, short stories and plays."},
    {"name": "Science fiction", "description": "Speculative and future-set fiction."},
    {"name": "Non-fiction", "description": "History, science and essays."},
    {"name": "Technology", "description": "Programming and software engineering."},
]

# (first_name, last_name, birth_year)
SEED_AUTHORS = [
    ("George", "Orwell", 1903),
    ("Frank", "Herbert", 1920),
    ("Jane", "Austen", 1775),
    ("Yuval Noah", "Harari", 1976),
    ("Robert C.", "Martin", 1952),
    ("Ray", "Bradbury", 1920),
]

# (title, isbn, published_year, total_copies, author last name, category name)
SEED_BOOKS = [
    ("1984", "9780451524935", 1949, 4, "Orwell", "Fiction"),
    ("Animal Farm", "9780451526342", 1945, 2, "Orwell", "Fiction"),
    ("Dune", "9780441013593", 1965, 3, "Herbert", "Science fiction"),
    ("Pride and Prejudice", "9780141439518", 1813, 2, "Austen", "Fiction"),
    ("Sapiens", "9780062316097", 2011, 5, "Harari", "Non-fiction"),
    ("Clean Code", "9780132350884", 2008, 1, "Martin", "Technology"),
    ("Fahrenheit 451", "9781451673319", 1953, 2, "Bradbury", "Science fiction"),
]


async def seed() -> None:
    await init_models()
    async with AsyncSessionLocal() as session:
        # Skip if already seeded
        book_count = await session.scalar(select(func.count()).select_from(Book))
        if book_count:
            logger.info("Database already seeded (%d books found). Skipping.", book_count)
            return

        categories = {data["name"]: Category(**data) for data in SEED_CATEGORIES}
        authors = {
            last: Author(first_name=first, last_name=last, birth_year=year)
            for first, last, year in SEED_AUTHORS
        }
        session.add_all([*categories.values(), *authors.values()])
        await session.flush()

        books = [
            Book(
                title=title,
                isbn=isbn,
                published_year=year,
                total_copies=copies,
                available_copies=copies,
                author_id=authors[author].id,
                category_id=categories[category].id,
            )
            for title, isbn, year, copies, author, category in SEED_BOOKS
        ]
        session.add_all(books)

        await session.commit()
        logger.info(
            "Seeded %d categories, %d authors and %d books.",
            len(categories),
            len(authors),
            len(books),
        )


if __name__ == "__main__":
    setup_logging()
    asyncio.run(seed())
