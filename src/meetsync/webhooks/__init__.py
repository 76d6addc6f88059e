"""MeetingBaas webhook ingress -- authentication, typed events, and dispatch."""
