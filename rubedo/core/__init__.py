"""
Queue and catalog bookkeeping.

`queue_store` talks to the SQLite file shared with the web front end and
`selector` decides what goes on air next. Nothing in here knows about Icecast.
"""
