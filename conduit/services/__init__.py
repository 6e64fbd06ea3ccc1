# Services package.
#
# Each module exposes async functions for one component of the content
# and social-graph layer:
#
#   slugs: tag canonicalisation and slug derivation (pure)
#   user_service: identity store (registration, lookups, updates)
#   profile_service: social graph (follow edges, profile views)
#   article_service: articles, slug uniqueness, favorites, listings
#   comment_service: comments scoped to an article
#   feed_service: per-viewer assembly of articles and comments
#
# Every function takes an AsyncSession as its first argument.  Writes go
# through ``database.run_transaction``, which commits and re-runs the unit
# of work on a write conflict.
