"""offerguard.core: data model, rejection taxonomy, codec and primitives."""
