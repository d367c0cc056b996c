"""Database models for Server Scheduler."""

from sqlalchemy import Boolean, Column, ForeignKey, Integer, String, Text
from sqlalchemy.orm import relationship

from .database import Base


class ServerModel(Base):
    __tablename__ = "servers"

    sid = Column(Integer, primary_key=True)
    description = Column(Text, nullable=False)
    game = Column(String, nullable=False)
    moniker = Column(String, nullable=False)
    startfile = Column(Text, nullable=False)
    stopcommand = Column(Text, nullable=False)
    warncommand = Column(Text, nullable=False)
    port = Column(Integer, nullable=False)
    autostart = Column(Boolean, nullable=False, default=False)

    events = relationship("EventModel", back_populates="server")


class EventTypeModel(Base):
    __tablename__ = "event_types"

    etid = Column(Integer, primary_key=True)
    label = Column(String, nullable=False)


class EventModel(Base):
    __tablename__ = "events"

    eid = Column(Integer, primary_key=True)
    sid = Column(Integer, ForeignKey("servers.sid"), nullable=False, index=True)
    # Time of day as "HH:MM:SS" (optionally with ".ffffff").
    time = Column(String, nullable=False)
    etype = Column(Integer, ForeignKey("event_types.etid"), nullable=False)
    # JSON array of strings.
    args = Column(Text, nullable=False, default="[]")

    server = relationship("ServerModel", back_populates="events")
