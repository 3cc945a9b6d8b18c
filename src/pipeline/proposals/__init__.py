"""Proposal lifecycle -- models, repository and the send/view/sign workflow."""
