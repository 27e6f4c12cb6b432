"""Real-time delivery of claim events over Socket.IO."""
