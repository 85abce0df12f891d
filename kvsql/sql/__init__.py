"""SQL values, schemas, expressions, query plans and optimizers."""