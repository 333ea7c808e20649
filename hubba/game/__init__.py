"""
Game Engine Package

This package contains the S.K.A.T.E. game engine:
- Turn state machine and letter progression
- Transactional idempotent operations on game and battle rows
- Round judging and disputes
- Battle voting
- Timeout sweep
"""
