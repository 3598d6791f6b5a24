"""Polling sources and their schedules.

    mailbox: Newest report attachment per subject over IMAP
    drive: New or changed files in a drive folder
    scheduler: One interval thread per poller
"""
