"""socialsync HTTP application package."""
