"""Published artifact storage for amrelay.

Finished conversions are copied into a public downloads directory under a
timestamp-prefixed name ({unix_seconds}_{display_name}) so that identical
display names never clash and the original name can be recovered for the
Content-Disposition header.

Artifacts are not tracked anywhere else: the directory listing is the
index, and the RetentionSweeper deletes anything older than an hour.
"""
