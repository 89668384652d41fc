"""Registry — where installable resources come from.

The registry layer provides:
- Collections: the core, common and expansion pack source trees
- Metadata: typed descriptors parsed from agent and team files
- Resolution: transitive dependency closures across collections
"""
