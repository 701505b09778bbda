"""Discovery strategies. The closed set is enumerated in key_cypher.core.registry."""
