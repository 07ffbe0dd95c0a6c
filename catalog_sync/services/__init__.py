"""Business logic services.

Services contain the sync engine and are called by routes and scripts:
- priority / policy: who may own a master record
- items / change_detection: feed normalization and no-op detection
- merge: bulk load-decide-write of one feed
- sync_tracker / sync: run lock, run state and orchestration
- providers: priority configuration
"""
