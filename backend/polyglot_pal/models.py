from __future__ import annotations
from datetime import datetime
from sqlalchemy import Column, String, DateTime, Integer, Float, Boolean, Text, ForeignKey, Index
from .db import Base


class ChatSessionRow(Base):
	__tablename__ = "chat_sessions"
	session_id = Column(String(128), primary_key=True, index=True)
	language = Column(String(32), nullable=False)
	scenario = Column(String(64), nullable=True)
	privileged = Column(Boolean, default=False, nullable=False)
	opening_prompt = Column(Text, nullable=True)
	created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
	updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)


class ChatTurnRow(Base):
	__tablename__ = "chat_turns"
	id = Column(Integer, primary_key=True, autoincrement=True)
	session_id = Column(String(128), ForeignKey("chat_sessions.session_id", ondelete="CASCADE"), nullable=False)
	# Position within the session; strictly increasing, survives pruning
	seq = Column(Integer, nullable=False)
	role = Column(String(8), nullable=False)
	timestamp = Column(Float, nullable=False)
	payload = Column(Text, nullable=False)  # JSON snapshot of the Turn

	__table_args__ = (Index("ix_chat_turns_session_seq", "session_id", "seq", unique=True),)
