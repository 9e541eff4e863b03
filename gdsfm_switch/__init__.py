"""GDS.FM switch.

Treats every Sonos speaker on the local network as a single on/off radio
switch: turning it on merges all groups into one, normalizes volumes and tunes
the main coordinator to GDS.FM; turning it off stops every group.
"""
