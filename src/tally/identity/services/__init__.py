"""Operations of the identity engine, parameterized by entity family."""
