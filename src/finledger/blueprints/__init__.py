"""HTTP blueprints for the JSON API."""
