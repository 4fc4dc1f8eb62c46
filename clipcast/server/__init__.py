"""HTTP API for scheduling posts, running the publish queue and assembling render plans."""
