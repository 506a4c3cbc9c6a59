#Session snapshot + reducers, and the per-order delivery state machine.
