"""Service layer: calcolatori, workflow e notifiche."""
