"""Domain entities, status enums and ORM tables."""
