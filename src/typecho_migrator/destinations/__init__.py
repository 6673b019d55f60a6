"""Destination adapters: Notion, Markdown files, Remark42 backup and MxSpace."""
