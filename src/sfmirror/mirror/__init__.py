"""Mirror store -- generated tables, repository and upsert engine."""
