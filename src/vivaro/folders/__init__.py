"""Virtual folders for notes and resources.

A folder is the set of ``folder`` path attributes observed across a client's
notes (or resources), plus folder markers that pin otherwise-empty paths.
``tree`` holds the pure grouping logic; ``index`` applies folder operations
to a client's entities through the entity store.
"""
